from aldl_link.cli import main

main()
