from chirpline.server import main

main()
