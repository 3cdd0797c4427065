"""Main entry point for the bot."""
from kidlingo.app import main


if __name__ == "__main__":
    main()
