"""Live chat auto-responder: polls YouTube live chat and answers with a streaming AI model."""
