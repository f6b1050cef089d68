"""Application services: attachments, blob storage, model catalog."""
