"""abengine command line interface."""
