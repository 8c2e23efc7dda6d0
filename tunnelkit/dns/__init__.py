"""DNS resolvers over UDP and TCP, and a stream dialer that resolves names with them."""