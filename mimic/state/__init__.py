"""State — the record of what mimic has applied, used for drift and undo."""
