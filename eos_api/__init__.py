"""EOS accountability API."""
