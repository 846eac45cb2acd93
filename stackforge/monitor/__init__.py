"""Stack monitoring and terminal rendering."""
