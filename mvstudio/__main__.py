"""CLI entry point for python -m mvstudio"""
from mvstudio.cli.commands import app

if __name__ == "__main__":
    app()
