"""Primary and secondary event stores."""
