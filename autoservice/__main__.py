"""
Entry point for running autoservice as a module: python -m autoservice
"""

from autoservice.cli.commands import main

if __name__ == "__main__":
    main()
