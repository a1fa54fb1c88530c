# disko_install/__main__.py
from disko_install.cli import main


if __name__ == "__main__":
    main()
