"""Allow running as `python -m smart_bookmarks`."""

from .cli import main

if __name__ == "__main__":
    main()
