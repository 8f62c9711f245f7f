"""Static analysis of candidates: blacklists, pins, outpaths and CVEs."""
