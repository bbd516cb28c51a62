"""Cross-cutting primitives shared by every Parley context: errors, time, ids."""
