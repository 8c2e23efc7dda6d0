"""Network-layer errors and interfaces, and UDP packet proxies."""