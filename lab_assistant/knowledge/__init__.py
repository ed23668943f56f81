"""Knowledge base: chunking, embeddings, retrieval and answer selection."""
