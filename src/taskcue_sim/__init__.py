"""taskcue command line and simulator."""
