from morphnorm.cli.main import main

main()
