"""Change feed of committed transaction writes."""
