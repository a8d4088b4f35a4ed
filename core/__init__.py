"""Domain contracts, collaborator interfaces and exceptions."""
