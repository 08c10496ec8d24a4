"""Flask service exposing the SOAP note pipeline over HTTP."""
