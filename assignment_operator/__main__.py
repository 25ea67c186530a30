"""Entry point for running assignment-operator as a module."""

from assignment_operator.tool.assignment_operator import main

if __name__ == "__main__":
    main()
