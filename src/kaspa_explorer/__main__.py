from kaspa_explorer.cli import main

main()
