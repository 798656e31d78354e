import sys

from registration_validator.cli import main


if __name__ == "__main__":
    sys.exit(main())
