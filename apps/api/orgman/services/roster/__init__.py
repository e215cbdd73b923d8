"""Roster strategies. Import concrete strategies from their modules."""
