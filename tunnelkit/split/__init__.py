"""Writer and dialer that split outgoing streams at chosen offsets."""