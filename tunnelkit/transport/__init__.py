"""Transport addresses, datagram dialers and listeners, and the Happy Eyeballs stream dialer."""