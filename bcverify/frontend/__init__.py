"""Frontend: unit model, descriptor parsing and unit loading."""
