"""
Core package for the SOAP note pipeline.

This package contains the components used by the HTTP service in
:mod:`soapnote_api` to accept recorded visits, transcribe them, turn the
transcript into a SOAP report with a generative model, and track each
submission as a job that clients can poll.
"""
