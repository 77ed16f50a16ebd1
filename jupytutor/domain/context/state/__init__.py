# State = everything the tutor knows about an open notebook right now:
# its plugin config, parsed cells, the running context retriever and
# per-cell widget state (resolved cell config, chat history, loading flags).
