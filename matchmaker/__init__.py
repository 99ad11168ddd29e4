"""Connection matching service: profiles, embeddings, matching, introductions.

Profile text is embedded asynchronously, candidates are retrieved by vector
similarity, filtered and diversity-reranked, and mutual accepts turn into
introductions.
"""
