"""Patient record service package."""
