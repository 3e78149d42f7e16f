from wimdeploy.cli.main import main

main()
