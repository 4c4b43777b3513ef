"""Dashboard Studio backend: dashboards, widgets and the aggregation pipeline."""
