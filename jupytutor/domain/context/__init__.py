# Context gathering for the tutor
#
#   notebook links
#        |
#        v
#   [link expansion]   (JupyterBook chapter pages, spliced after their source)
#        |
#        v
#   [whitelist / blacklist]
#        |
#        v
#   [page scraper]     (one fetch per link, failures become "no content")
#        |
#        v
#   aggregated text -> chat request
