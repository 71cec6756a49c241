"""Allow ``python -m gitfetch``."""

from gitfetch.cli import main

if __name__ == "__main__":
	main()
