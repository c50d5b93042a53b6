"""Allow ``python -m larkbridge``."""

from .server.app import main

if __name__ == "__main__":
    main()
