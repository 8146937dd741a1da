from httptrace.cli.main import main


main()
