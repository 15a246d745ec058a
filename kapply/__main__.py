"""Run the kapply command line tool."""

from kapply.tool.kapply import main

if __name__ == "__main__":
    main()
