from .psd_entrypoint import main

main()
