"""HTTP application exposing the data-access layer."""
