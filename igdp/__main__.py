"""Allow ``python -m igdp``."""

from igdp.cli import main

if __name__ == "__main__":
    main()
