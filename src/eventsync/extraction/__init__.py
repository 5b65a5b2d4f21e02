"""Field extraction: strategies, date parsing and text sanitizing."""
