"""Sales dashboard domain: quarter math, live aggregation, deal entry, rendering."""
