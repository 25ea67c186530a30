"""Command line tool for assignment-operator."""
