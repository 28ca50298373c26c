"""Transaction read and write routes for dashboards and kiosks."""
