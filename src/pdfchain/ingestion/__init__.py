"""Source listing and content parsing collaborators."""
