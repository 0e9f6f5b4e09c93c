"""Command-line interface for shiftlane."""
