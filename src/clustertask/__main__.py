"""Entry point for running clustertask as a module.

Submitted jobs run ``python -m clustertask exec-task <context file>``.
"""

from clustertask.cli import main

if __name__ == "__main__":
    main()
