"""
CLI entry point, when used as a module: `python -m kwatch`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kwatch").
"""
from kwatch import cli

if __name__ == '__main__':
    cli.main()
