"""HTTP routes of the notebridge API."""
